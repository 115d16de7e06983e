from .user import Base, User  # noqa: F401  → registers the table with Base.metadata
from .magic_link import MagicLinkToken  # noqa: F401
from .otp import OtpToken  # noqa: F401
from .session import UserSession  # noqa: F401
