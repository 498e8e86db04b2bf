# inkpost/crud/profiles.py
from sqlmodel import Session, select
from typing import Dict, Iterable, Optional

from inkpost.core.exceptions import RecordNotFoundError, UsernameTakenError
from inkpost.models.user import Profile, utcnow
from inkpost.schemas.blog import ProfileUpdate


class ProfileCRUD:
    def get_profile(self, db: Session, user_id: int) -> Optional[Profile]:
        return db.get(Profile, user_id)

    def get_profile_by_username(self, db: Session, username: str) -> Optional[Profile]:
        return db.exec(select(Profile).where(Profile.username == username)).first()

    def username_exists(self, db: Session, username: str) -> bool:
        return self.get_profile_by_username(db, username) is not None

    def get_profiles(self, db: Session, user_ids: Iterable[int]) -> Dict[int, Profile]:
        ids = set(user_ids)
        if not ids:
            return {}
        return {p.id: p for p in db.exec(select(Profile).where(Profile.id.in_(ids))).all()}

    def update_profile(self, db: Session, user_id: int, updates: ProfileUpdate) -> Profile:
        """Apply the explicitly set fields of `updates` to the user's profile."""
        profile = db.get(Profile, user_id)
        if not profile:
            raise RecordNotFoundError(f"Profile {user_id} not found")

        update_data = updates.model_dump(exclude_unset=True)

        new_username = update_data.get("username")
        if new_username and new_username != profile.username and self.username_exists(db, new_username):
            raise UsernameTakenError(new_username)

        for field, value in update_data.items():
            setattr(profile, field, value)
        profile.updated_at = utcnow()

        db.add(profile)
        db.commit()
        db.refresh(profile)
        return profile


profile_crud = ProfileCRUD()
