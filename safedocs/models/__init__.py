from .access_requests import AccessRequest, AccessRequestStatus
from .audit_logs import AuditLog
from .documents import Document, DocumentVersion, StorageType
from .employees import Employee, EmployeeDocument, EmployeeStatus
from .folders import Folder
from .groups import Group, GroupMember, GroupRole
from .media_items import MediaItem, MediaType
from .notifications import Notification, NotificationType
from .orgs import Org
from .permissions import AccessLevel, DocumentPermission, FolderPermission, PermissionType
from .share_links import ShareLink
from .tags import Tag, document_tags
from .user_sessions import UserSession
from .users import User, UserRole

__all__ = [
    "AccessLevel",
    "AccessRequest",
    "AccessRequestStatus",
    "AuditLog",
    "Document",
    "DocumentPermission",
    "DocumentVersion",
    "Employee",
    "EmployeeDocument",
    "EmployeeStatus",
    "Folder",
    "FolderPermission",
    "Group",
    "GroupMember",
    "GroupRole",
    "MediaItem",
    "MediaType",
    "Notification",
    "NotificationType",
    "Org",
    "PermissionType",
    "ShareLink",
    "StorageType",
    "Tag",
    "User",
    "UserRole",
    "UserSession",
    "document_tags",
]
