from .ledger import (
    Base,
    metadata,
    ClientPackageItems,
    ClientPackages,
    ClientPackageUsages,
    Company,
    PackagePayments,
    PackageStatus,
    PackageTemplateItems,
    PackageTemplates,
    Services,
    TERMINAL_STATUSES,
    UsageStatus,
    Users,
    ValidityType,
)

__all__ = [
    "Base",
    "metadata",
    "ClientPackageItems",
    "ClientPackages",
    "ClientPackageUsages",
    "Company",
    "PackagePayments",
    "PackageStatus",
    "PackageTemplateItems",
    "PackageTemplates",
    "Services",
    "TERMINAL_STATUSES",
    "UsageStatus",
    "Users",
    "ValidityType",
]
