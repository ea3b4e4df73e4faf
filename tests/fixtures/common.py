"""
Common/Shared Fixtures
"""
import uuid


def make_member_id() -> str:
    """Unique member id; members are identified upstream, the engine only stores the id"""
    return f"mbr_test_{uuid.uuid4().hex[:12]}"
