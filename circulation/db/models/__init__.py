"""ORM models aggregate exports."""
from .lending import (  # noqa: F401
	Base,
	MembershipStatus,
	CopyStatus,
	LoanStatus,
	OPEN_LOAN_STATUSES,
	ReservationStatus,
	FineType,
	FineStatus,
	Member,
	Title,
	Copy,
	Loan,
	Reservation,
	Fine,
)

__all__ = [
	"Base",
	"MembershipStatus",
	"CopyStatus",
	"LoanStatus",
	"OPEN_LOAN_STATUSES",
	"ReservationStatus",
	"FineType",
	"FineStatus",
	"Member",
	"Title",
	"Copy",
	"Loan",
	"Reservation",
	"Fine",
]
