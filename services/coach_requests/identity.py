"""
Session identity - who is acting on coach requests
Adapts an authenticated Supabase session to current_user()/current_coach()
"""
from typing import Dict, Optional

from utils.logger import log_info, log_warning


class SessionIdentity:
    """Current user and, when the user is a coach, their coach row"""

    def __init__(self, user: Optional[Dict] = None, coach: Optional[Dict] = None):
        self.user = user
        self.coach = coach

    def current_user(self) -> Optional[Dict]:
        """{'id': ...} for the signed-in user, None when signed out"""
        return self.user

    def current_coach(self) -> Optional[Dict]:
        """{'id': ..., 'full_name': ...} when the user is a coach"""
        return self.coach

    @classmethod
    async def from_supabase(cls, supabase_client, repository) -> 'SessionIdentity':
        """Build from the client's signed-in session"""
        response = await supabase_client.auth.get_user()
        user = getattr(response, 'user', None) if response else None

        if not user:
            log_warning("No authenticated user on the Supabase session")
            return cls()

        coach = await repository.query_coach_by_user(user.id)
        log_info(f"Session identity resolved for user {user.id} (coach: {bool(coach)})")
        return cls(user={'id': user.id}, coach=coach)
