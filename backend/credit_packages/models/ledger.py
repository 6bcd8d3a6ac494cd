import enum

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Column,
    DateTime,
    Enum,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    Text,
    UniqueConstraint,
    func,
)
from sqlalchemy.orm import declarative_base, relationship

Base = declarative_base()
metadata = Base.metadata


class PackageStatus(str, enum.Enum):
    PENDING_PAYMENT = "pending_payment"
    ACTIVE = "active"
    COMPLETED = "completed"
    EXPIRED = "expired"
    CANCELLED = "cancelled"


TERMINAL_STATUSES = (
    PackageStatus.COMPLETED,
    PackageStatus.EXPIRED,
    PackageStatus.CANCELLED,
)


class UsageStatus(str, enum.Enum):
    USED = "used"
    CANCELLED = "cancelled"


class ValidityType(str, enum.Enum):
    DAYS_FROM_PURCHASE = "days_from_purchase"
    DAYS_FROM_ACTIVATION = "days_from_activation"


def _str_enum(enum_cls, name):
    return Enum(
        enum_cls,
        name=name,
        native_enum=False,
        length=32,
        values_callable=lambda e: [x.value for x in e],
    )


def _money():
    return Numeric(12, 2)


class Company(Base):
    __tablename__ = 'company'

    id = Column(Integer, primary_key=True)
    name = Column(Text, nullable=False)
    created_at = Column(DateTime, server_default=func.now())

    users = relationship('Users', back_populates='company')
    services = relationship('Services', back_populates='company')
    package_templates = relationship('PackageTemplates', back_populates='company')


class Users(Base):
    """Clients of a tenant. Read-only for the ledger."""
    __tablename__ = 'users'

    id = Column(Integer, primary_key=True)
    company_id = Column(ForeignKey('company.id', ondelete='CASCADE'), nullable=False)
    first_name = Column(Text, nullable=False)
    last_name = Column(Text)
    phone = Column(Text)
    email = Column(Text)
    is_active = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime, server_default=func.now())

    company = relationship('Company', back_populates='users')
    client_packages = relationship('ClientPackages', back_populates='client')

    @property
    def full_name(self) -> str:
        return " ".join(p for p in (self.first_name, self.last_name) if p)


class Services(Base):
    """Service catalog of a tenant. Read-only for the ledger."""
    __tablename__ = 'services'

    id = Column(Integer, primary_key=True)
    company_id = Column(ForeignKey('company.id', ondelete='CASCADE'), nullable=False)
    name = Column(Text, nullable=False)
    price = Column(_money(), nullable=False)
    duration_min = Column(Integer)
    description = Column(Text)
    is_active = Column(Boolean, nullable=False, default=True)

    company = relationship('Company', back_populates='services')


class PackageTemplates(Base):
    __tablename__ = 'package_templates'

    id = Column(Integer, primary_key=True)
    company_id = Column(ForeignKey('company.id', ondelete='CASCADE'), nullable=False)
    name = Column(Text, nullable=False)
    description = Column(Text)
    code = Column(Text)
    validity_days = Column(Integer, nullable=False)
    validity_type = Column(
        _str_enum(ValidityType, 'validity_type'),
        nullable=False,
        default=ValidityType.DAYS_FROM_PURCHASE,
    )
    original_price = Column(_money(), nullable=False)
    sale_price = Column(_money(), nullable=False)
    allow_partial_use = Column(Boolean, nullable=False, default=True)
    transferable = Column(Boolean, nullable=False, default=False)
    max_installments = Column(Integer, nullable=False, default=1)
    is_active = Column(Boolean, nullable=False, default=True)
    version = Column(Integer, nullable=False, default=1)
    created_at = Column(DateTime, nullable=False)
    updated_at = Column(DateTime)
    deleted_at = Column(DateTime)

    __mapper_args__ = {"version_id_col": version}

    company = relationship('Company', back_populates='package_templates')
    items = relationship(
        'PackageTemplateItems',
        back_populates='template',
        cascade='all, delete-orphan',
        order_by='PackageTemplateItems.id',
    )
    client_packages = relationship('ClientPackages', back_populates='template')


class PackageTemplateItems(Base):
    __tablename__ = 'package_template_items'
    __table_args__ = (
        CheckConstraint('quantity >= 1', name='ck_template_item_quantity'),
    )

    id = Column(Integer, primary_key=True)
    template_id = Column(ForeignKey('package_templates.id', ondelete='CASCADE'), nullable=False)
    service_id = Column(ForeignKey('services.id'), nullable=False)
    quantity = Column(Integer, nullable=False)
    unit_price = Column(_money())  # NULL = service's current price at sale time

    template = relationship('PackageTemplates', back_populates='items')
    service = relationship('Services')


class ClientPackages(Base):
    __tablename__ = 'client_packages'
    __table_args__ = (
        UniqueConstraint('company_id', 'code'),
        Index('ix_client_packages_status_expiry', 'company_id', 'status', 'expires_at'),
        Index('ix_client_packages_client', 'company_id', 'client_id'),
    )

    id = Column(Integer, primary_key=True)
    company_id = Column(ForeignKey('company.id', ondelete='CASCADE'), nullable=False)
    client_id = Column(ForeignKey('users.id'), nullable=False)
    template_id = Column(ForeignKey('package_templates.id'))  # NULL = custom package
    template_version = Column(Integer)
    name = Column(Text, nullable=False)
    description = Column(Text)
    code = Column(Text, nullable=False)

    # Snapshot of the template's validity at sale time
    validity_days = Column(Integer, nullable=False)
    validity_type = Column(_str_enum(ValidityType, 'validity_type'), nullable=False)
    allow_partial_use = Column(Boolean, nullable=False, default=True)

    status = Column(
        _str_enum(PackageStatus, 'client_package_status'),
        nullable=False,
        default=PackageStatus.PENDING_PAYMENT,
    )
    purchase_date = Column(DateTime, nullable=False)
    activation_date = Column(DateTime)
    expires_at = Column(DateTime)
    completed_at = Column(DateTime)
    cancelled_at = Column(DateTime)

    original_price = Column(_money(), nullable=False)
    sale_price = Column(_money(), nullable=False)
    discount_amount = Column(_money(), nullable=False, default=0)
    paid_amount = Column(_money(), nullable=False, default=0)
    payment_method = Column(Text)
    installments = Column(Integer, nullable=False, default=1)

    notes = Column(Text)
    internal_notes = Column(Text)
    sold_by = Column(Integer)
    created_at = Column(DateTime, nullable=False)

    client = relationship('Users', back_populates='client_packages')
    template = relationship('PackageTemplates', back_populates='client_packages')
    items = relationship(
        'ClientPackageItems',
        back_populates='client_package',
        order_by='ClientPackageItems.id',
    )
    usages = relationship(
        'ClientPackageUsages',
        back_populates='client_package',
        order_by='ClientPackageUsages.id',
    )
    payments = relationship(
        'PackagePayments',
        back_populates='client_package',
        order_by='PackagePayments.id',
    )


class ClientPackageItems(Base):
    __tablename__ = 'client_package_items'
    __table_args__ = (
        CheckConstraint(
            'used_quantity >= 0 AND cancelled_quantity >= 0 '
            'AND used_quantity + cancelled_quantity <= quantity',
            name='ck_package_item_credits',
        ),
        UniqueConstraint('client_package_id', 'service_id'),
    )

    id = Column(Integer, primary_key=True)
    client_package_id = Column(ForeignKey('client_packages.id', ondelete='CASCADE'), nullable=False)
    service_id = Column(ForeignKey('services.id'), nullable=False)
    quantity = Column(Integer, nullable=False)
    used_quantity = Column(Integer, nullable=False, default=0)
    cancelled_quantity = Column(Integer, nullable=False, default=0)
    unit_price = Column(_money(), nullable=False)
    version = Column(Integer, nullable=False)

    __mapper_args__ = {"version_id_col": version}

    client_package = relationship('ClientPackages', back_populates='items')
    service = relationship('Services')
    usages = relationship('ClientPackageUsages', back_populates='item')

    @property
    def available_quantity(self) -> int:
        return self.quantity - self.used_quantity - self.cancelled_quantity


class ClientPackageUsages(Base):
    __tablename__ = 'client_package_usages'
    __table_args__ = (
        CheckConstraint('quantity >= 1', name='ck_usage_quantity'),
        Index('ix_usages_package', 'client_package_id'),
        Index('ix_usages_used_at', 'used_at'),
    )

    id = Column(Integer, primary_key=True)
    client_package_id = Column(ForeignKey('client_packages.id', ondelete='CASCADE'), nullable=False)
    item_id = Column(ForeignKey('client_package_items.id', ondelete='CASCADE'), nullable=False)
    quantity = Column(Integer, nullable=False)
    used_at = Column(DateTime, nullable=False)
    used_by = Column(Integer)
    appointment_id = Column(Integer)
    provider_id = Column(Integer)
    notes = Column(Text)
    status = Column(
        _str_enum(UsageStatus, 'package_usage_status'),
        nullable=False,
        default=UsageStatus.USED,
    )
    cancelled_at = Column(DateTime)
    cancelled_by = Column(Integer)
    cancellation_reason = Column(Text)

    client_package = relationship('ClientPackages', back_populates='usages')
    item = relationship('ClientPackageItems', back_populates='usages')


class PackagePayments(Base):
    __tablename__ = 'package_payments'
    __table_args__ = (
        CheckConstraint('amount > 0', name='ck_payment_amount'),
    )

    id = Column(Integer, primary_key=True)
    client_package_id = Column(ForeignKey('client_packages.id', ondelete='CASCADE'), nullable=False)
    amount = Column(_money(), nullable=False)
    method = Column(Text)
    notes = Column(Text)
    paid_at = Column(DateTime, nullable=False)
    recorded_by = Column(Integer)

    client_package = relationship('ClientPackages', back_populates='payments')
