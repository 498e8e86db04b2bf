# inkpost/crud/tags.py
from sqlmodel import Session, select
from typing import Dict, List, Optional

from inkpost.models.blog import Tag


class TagCRUD:
    def fetch_tags(self, db: Session) -> List[Tag]:
        """All tags, ordered by name."""
        return list(db.exec(select(Tag).order_by(Tag.name)).all())

    def get_tag_by_slug(self, db: Session, slug: str) -> Optional[Tag]:
        return db.exec(select(Tag).where(Tag.slug == slug)).first()

    def get_tag_id_by_slug(self, db: Session, slug: str) -> Optional[int]:
        tag = self.get_tag_by_slug(db, slug)
        return tag.id if tag else None

    def get_tags_by_ids(self, db: Session, tag_ids: List[int]) -> List[Tag]:
        """Tags for `tag_ids`, in the order the ids are given; unknown ids are skipped."""
        if not tag_ids:
            return []
        found: Dict[int, Tag] = {
            tag.id: tag for tag in db.exec(select(Tag).where(Tag.id.in_(tag_ids))).all()
        }
        return [found[tag_id] for tag_id in tag_ids if tag_id in found]


tag_crud = TagCRUD()
