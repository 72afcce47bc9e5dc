# models/user.py
from flask_login import UserMixin
from werkzeug.security import generate_password_hash, check_password_hash
from datetime import datetime
from sqlalchemy import Index

from enrollment_engine.extensions import db
from .base import BaseModel

# Association table for many-to-many relationship between users and roles
user_roles = db.Table('user_roles',
                      db.Column('user_id', db.Integer, db.ForeignKey('users.id'), primary_key=True),
                      db.Column('role_id', db.Integer, db.ForeignKey('roles.id'), primary_key=True),
                      db.Column('assigned_at', db.DateTime, default=datetime.now)
                      )


class RoleType:
    """Define role types as constants."""
    PARTICIPANT = 'participant'
    INSTRUCTOR = 'instructor'
    ADMIN = 'admin'


class Role(BaseModel):
    """Role model for RBAC."""

    __tablename__ = 'roles'

    name = db.Column(db.String(80), unique=True, nullable=False)
    display_name = db.Column(db.String(100), nullable=False)
    description = db.Column(db.Text)

    users = db.relationship('User', secondary=user_roles, back_populates='roles')

    def __repr__(self):
        return f'<Role {self.name}>'

    @staticmethod
    def create_default_roles():
        """Create the participant, instructor and admin roles if missing."""
        default_roles = {
            RoleType.PARTICIPANT: ('Participant', 'Enrolls in classes and confirms attendance'),
            RoleType.INSTRUCTOR: ('Instructor', 'Teaches classes and confirms attendance of enrollees'),
            RoleType.ADMIN: ('Administrator', 'Manages events and corrects attendance'),
        }

        for role_name, (display_name, description) in default_roles.items():
            if not Role.query.filter_by(name=role_name).first():
                db.session.add(Role(name=role_name, display_name=display_name, description=description))

        db.session.commit()


class User(UserMixin, BaseModel):
    """
    Person known to the system.

    ``registration`` is the external identifier matched against registration
    allow-lists of restricted events; ``job_role_id`` and ``unit_id`` are matched
    against the role and unit allow-lists.
    """

    __tablename__ = 'users'

    name = db.Column(db.String(160), nullable=False)
    email = db.Column(db.String(120), unique=True, nullable=True)
    password_hash = db.Column(db.String(255), nullable=True)
    registration = db.Column(db.String(40), nullable=True)
    job_role_id = db.Column(db.Integer, nullable=True)
    unit_id = db.Column(db.Integer, nullable=True)
    is_active = db.Column(db.Boolean, default=True, nullable=False)

    roles = db.relationship('Role', secondary=user_roles, back_populates='users')

    __table_args__ = (
        Index('idx_user_registration', 'registration'),
        Index('idx_user_active', 'is_active'),
    )

    def __repr__(self):
        return f'<User {self.name}>'

    def set_password(self, password):
        self.password_hash = generate_password_hash(password)

    def check_password(self, password):
        return bool(self.password_hash) and check_password_hash(self.password_hash, password)

    def has_role(self, role_name):
        """Check if user has specific role."""
        return any(role.name == role_name for role in self.roles)

    def has_any_role(self, role_names):
        """Check if user has any of the specified roles."""
        names = {role.name for role in self.roles}
        return any(role in names for role in role_names)

    def add_role(self, role_name):
        """Add a role to this user."""
        role = Role.query.filter_by(name=role_name).first()
        if role and role not in self.roles:
            self.roles.append(role)

    def is_admin(self):
        return self.has_role(RoleType.ADMIN)

    def to_dict(self):
        """Override to exclude sensitive data."""
        result = super().to_dict()
        result.pop('password_hash', None)
        result['roles'] = [role.name for role in self.roles]
        return result
