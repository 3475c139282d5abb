from enum import Enum


class UserRole(str, Enum):
    USER = "user"
    ADMIN = "admin"
    IT = "it"


class TicketStatus(str, Enum):
    PENDING = "Pending"
    IN_PROGRESS = "In Progress"
    ON_HOLD = "On Hold"
    DONE = "Done"
    CLOSED = "Closed"


class TicketPriority(str, Enum):
    LOW = "Low"
    MEDIUM = "Medium"
    HIGH = "High"
    CRITICAL = "Critical"


class EquipmentType(str, Enum):
    PC = "PC"
    LAPTOP = "Laptop"
    PRINTER = "Printer"
    INTERNET = "Internet"
    OTHER = "Other"


# Equipment types the ticket table was designed around; the rest are accepted
# at the edge and handled according to `settings.equipment_type_policy`.
STORED_EQUIPMENT_TYPES = frozenset({EquipmentType.PC, EquipmentType.LAPTOP, EquipmentType.OTHER})


class TicketUpdateType(str, Enum):
    STATUS_CHANGE = "status_change"
    NOTE = "note"
    ASSIGNMENT = "assignment"
