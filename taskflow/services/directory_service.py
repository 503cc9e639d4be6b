from __future__ import annotations

import hashlib
import os

from sqlalchemy.exc import IntegrityError
from sqlmodel import Session, select

from taskflow.domain.models import (
    BootstrapAdminRequest,
    Group,
    GroupCreate,
    GroupMember,
    Project,
    ProjectCreate,
    User,
    UserCreate,
)
from taskflow.domain.normalize import title_case
from taskflow.domain.permissions import DEFAULT_ROLE_NAMES, ROLE_SUPER_ADMIN, normalize_role
from taskflow.infra.db import get_engine
from taskflow.infra.events import event_bus


class DirectoryError(Exception):
    pass


class NotFoundError(DirectoryError):
    pass


class ConflictError(DirectoryError):
    pass


class AuthError(DirectoryError):
    pass


class ValidationError(DirectoryError):
    pass


class DirectoryService:
    def _session(self) -> Session:
        return Session(get_engine(), expire_on_commit=False)

    def _hash_password(self, raw_password: str) -> str:
        salt = os.getenv("PASSWORD_SALT", "taskflow-dev-salt")
        return hashlib.sha256(f"{salt}:{raw_password}".encode()).hexdigest()

    @staticmethod
    def _normalize_email(email: str) -> str:
        return email.strip().lower()

    def _validated_role(self, role: str) -> str:
        normalized = normalize_role(role)
        if normalized not in DEFAULT_ROLE_NAMES:
            raise ValidationError(f"unknown role: {role}")
        return normalized

    def create_user(self, payload: UserCreate) -> User:
        with self._session() as session:
            user = User(
                name=title_case(payload.name.strip()) or payload.name,
                email=self._normalize_email(payload.email),
                role=self._validated_role(payload.role),
                password_hash=self._hash_password(payload.password),
                is_active=payload.is_active,
            )
            session.add(user)
            try:
                session.commit()
            except IntegrityError as exc:
                session.rollback()
                raise ConflictError("email already registered") from exc
            session.refresh(user)
        event_bus.publish_dict("directory.user.created", {"user_id": user.id, "role": user.role})
        return user

    def bootstrap_admin(self, payload: BootstrapAdminRequest) -> User:
        with self._session() as session:
            if session.exec(select(User.id)).first() is not None:
                raise ConflictError("directory already initialized")
            user = User(
                name=title_case(payload.name.strip()) or payload.name,
                email=self._normalize_email(payload.email),
                role=ROLE_SUPER_ADMIN,
                password_hash=self._hash_password(payload.password),
                is_active=True,
            )
            session.add(user)
            session.commit()
            session.refresh(user)
            return user

    def login(self, email: str, password: str) -> User:
        with self._session() as session:
            user = session.exec(select(User).where(User.email == self._normalize_email(email))).first()
            if user is None:
                raise AuthError("invalid credentials")
            if not user.is_active:
                raise AuthError("user disabled")
            if user.password_hash != self._hash_password(password):
                raise AuthError("invalid credentials")
            return user

    def get_user(self, user_id: str) -> User:
        with self._session() as session:
            user = session.get(User, user_id)
            if user is None:
                raise NotFoundError("user not found")
            return user

    def list_users(self) -> list[User]:
        with self._session() as session:
            return list(session.exec(select(User).order_by(User.name)).all())

    def create_group(self, payload: GroupCreate) -> Group:
        with self._session() as session:
            group = Group(
                group_no=payload.group_no.strip(),
                group_name=title_case(payload.group_name.strip()) or payload.group_name,
            )
            session.add(group)
            try:
                session.flush()
                for user_id in dict.fromkeys(payload.member_ids):
                    if session.get(User, user_id) is None:
                        raise NotFoundError(f"user not found: {user_id}")
                    session.add(GroupMember(group_id=group.id, user_id=user_id))
                session.commit()
            except IntegrityError as exc:
                session.rollback()
                raise ConflictError("group number already exists") from exc
            session.refresh(group)
            return group

    def get_group(self, group_id: str) -> Group:
        with self._session() as session:
            group = session.get(Group, group_id)
            if group is None:
                raise NotFoundError("group not found")
            return group

    def list_groups(self) -> list[Group]:
        with self._session() as session:
            return list(session.exec(select(Group).order_by(Group.group_name)).all())

    def add_member(self, group_id: str, user_id: str) -> GroupMember:
        with self._session() as session:
            if session.get(Group, group_id) is None:
                raise NotFoundError("group not found")
            if session.get(User, user_id) is None:
                raise NotFoundError("user not found")
            existing = session.get(GroupMember, (group_id, user_id))
            if existing is not None:
                return existing
            link = GroupMember(group_id=group_id, user_id=user_id)
            session.add(link)
            session.commit()
            session.refresh(link)
            return link

    def remove_member(self, group_id: str, user_id: str) -> None:
        with self._session() as session:
            link = session.get(GroupMember, (group_id, user_id))
            if link is None:
                raise NotFoundError("group member not found")
            session.delete(link)
            session.commit()

    def members_of(self, group_id: str) -> list[User]:
        with self._session() as session:
            if session.get(Group, group_id) is None:
                raise NotFoundError("group not found")
            statement = (
                select(User)
                .join(GroupMember, GroupMember.user_id == User.id)
                .where(GroupMember.group_id == group_id)
                .order_by(User.name)
            )
            return list(session.exec(statement).all())

    def groups_of(self, user_id: str) -> list[Group]:
        with self._session() as session:
            statement = (
                select(Group)
                .join(GroupMember, GroupMember.group_id == Group.id)
                .where(GroupMember.user_id == user_id)
                .order_by(Group.group_name)
            )
            return list(session.exec(statement).all())

    def create_project(self, payload: ProjectCreate) -> Project:
        with self._session() as session:
            project = Project(
                project_no=payload.project_no.strip(),
                project_name=title_case(payload.project_name.strip()) or payload.project_name,
            )
            session.add(project)
            try:
                session.commit()
            except IntegrityError as exc:
                session.rollback()
                raise ConflictError("project number already exists") from exc
            session.refresh(project)
            return project

    def get_project(self, project_id: str) -> Project:
        with self._session() as session:
            project = session.get(Project, project_id)
            if project is None:
                raise NotFoundError("project not found")
            return project

    def list_projects(self) -> list[Project]:
        with self._session() as session:
            return list(session.exec(select(Project).order_by(Project.project_no)).all())
