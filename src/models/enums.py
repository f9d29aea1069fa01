"""Enums for model fields."""

from enum import Enum


class AccountStatus(str, Enum):
    """Lifecycle state of a user account."""

    ACTIVE = "active"
    SUSPENDED = "suspended"
    DEACTIVATED = "deactivated"


class DeviceType(str, Enum):
    """Form factor derived from the user agent."""

    DESKTOP = "desktop"
    MOBILE = "mobile"
    TABLET = "tablet"
    OTHER = "other"


class OSType(str, Enum):
    """Operating system derived from the user agent."""

    WINDOWS = "windows"
    MACOS = "macos"
    LINUX = "linux"
    IOS = "ios"
    ANDROID = "android"
    OTHER = "other"


class ContentType(str, Enum):
    """Kinds of content a device can sync."""

    CLIPBOARD = "clipboard"
    LINK = "link"
    FILE = "file"
    NOTE = "note"


class SyncState(str, Enum):
    """Delivery state of a sync record on one device."""

    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    FAILED = "failed"
    CONFLICT = "conflict"


class ConflictResolutionStrategy(str, Enum):
    LATEST_WINS = "latest_wins"
    SOURCE_WINS = "source_wins"
    DESTINATION_WINS = "destination_wins"
    MANUAL = "manual"


class SecurityEventType(str, Enum):
    """Audited security-relevant actions."""

    LOGIN_SUCCESS = "login_success"
    LOGIN_FAILED = "login_failed"
    DEVICE_PAIRED = "device_paired"
    DEVICE_REMOVED = "device_removed"
    SUSPICIOUS_ACTIVITY = "suspicious_activity"
    PASSWORD_CHANGED = "password_changed"
    PASSWORD_RESET_REQUESTED = "password_reset_requested"
    LOGOUT = "logout"


class SecurityEventSeverity(str, Enum):
    """Severity levels for security events."""

    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"

