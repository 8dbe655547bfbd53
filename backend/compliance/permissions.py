# Overview: Capability catalogue and role/level defaults.

"""
Capabilities are resolved per user in this order:

1. explicit per-user override (User.permission_overrides)
2. permission-level defaults (Basic / Moderate / Advanced)
3. defaults of the user's current role

Resolution itself lives in services/permission_service.py.
"""

ROLE_CLIENT = "client"
ROLE_INSPECTOR = "inspector"
ROLE_TRAINER = "trainer"
ROLE_SUPERVISOR = "supervisor"
ROLE_ACCOUNTANT = "accountant"
ROLE_MANAGER = "manager"
ROLE_GM = "gm"

VALID_ROLES = (
    ROLE_CLIENT,
    ROLE_INSPECTOR,
    ROLE_TRAINER,
    ROLE_SUPERVISOR,
    ROLE_ACCOUNTANT,
    ROLE_MANAGER,
    ROLE_GM,
)

LEVEL_BASIC = "Basic"
LEVEL_MODERATE = "Moderate"
LEVEL_ADVANCED = "Advanced"
VALID_LEVELS = (LEVEL_BASIC, LEVEL_MODERATE, LEVEL_ADVANCED)

CAPABILITIES = {
    "createJobOrder": "Create job orders independently",
    "viewReports": "View reports",
    "downloadReports": "Download reports",
    "downloadCertificates": "Download certificates",
    "viewAllJobOrders": "View all job orders (not just assigned)",
    "approveJobOrders": "Approve or reject job orders and reports",
    "manageUsers": "Manage users and delegations",
    "manageStickers": "Manage sticker lots, stock, requests and tags",
    "viewAnalytics": "View analytics",
    "manageSettings": "Manage system settings",
    "issueCertificates": "Issue certificates on demand",
    "viewFinancialData": "View financial/payment data",
    "confirmPayments": "Confirm or reject client payments",
    "exportData": "Export data",
    "manageRegions": "Manage regions",
    "assignJobs": "Assign jobs to others",
    "viewActivityLogs": "View activity logs",
}

DEFAULT_PERMISSIONS_BY_LEVEL = {
    LEVEL_BASIC: {
        "viewReports": False,
        "downloadReports": False,
        "downloadCertificates": False,
        "viewAllJobOrders": False,
        "viewAnalytics": False,
        "viewFinancialData": False,
        "exportData": False,
        "viewActivityLogs": False,
    },
    LEVEL_MODERATE: {
        "viewReports": True,
        "downloadReports": True,
        "downloadCertificates": True,
        "viewAllJobOrders": True,
        "viewAnalytics": False,
        "viewFinancialData": False,
        "exportData": True,
        "viewActivityLogs": True,
    },
    LEVEL_ADVANCED: {
        "viewReports": True,
        "downloadReports": True,
        "downloadCertificates": True,
        "viewAllJobOrders": True,
        "approveJobOrders": True,
        "manageUsers": True,
        "manageStickers": True,
        "viewAnalytics": True,
        "manageSettings": True,
        "issueCertificates": True,
        "viewFinancialData": True,
        "exportData": True,
        "manageRegions": True,
        "assignJobs": True,
        "viewActivityLogs": True,
    },
}

DEFAULT_PERMISSIONS_BY_ROLE = {
    # Inspectors cannot create job orders unless explicitly allowed
    ROLE_INSPECTOR: {
        "createJobOrder": False,
        "viewReports": True,
        "downloadCertificates": True,
        "viewAllJobOrders": False,
    },
    ROLE_SUPERVISOR: {
        "createJobOrder": True,
        "approveJobOrders": True,
        "viewReports": True,
        "downloadReports": True,
        "viewAllJobOrders": True,
        "assignJobs": True,
    },
    ROLE_TRAINER: {
        "createJobOrder": False,
        "viewReports": True,
        "downloadCertificates": True,
    },
    ROLE_MANAGER: {
        "createJobOrder": True,
        "approveJobOrders": True,
        "viewReports": True,
        "downloadReports": True,
        "viewAllJobOrders": True,
        "manageUsers": True,
        "manageStickers": True,
        "viewAnalytics": True,
        "assignJobs": True,
        "viewActivityLogs": True,
    },
    ROLE_ACCOUNTANT: {
        "viewReports": True,
        "downloadReports": True,
        "viewFinancialData": True,
        "confirmPayments": True,
        "exportData": True,
    },
    ROLE_GM: {code: True for code in CAPABILITIES},
    ROLE_CLIENT: {},
}

# These roles may always create job orders regardless of overrides
ALWAYS_CREATE_ROLES = frozenset({ROLE_MANAGER, ROLE_SUPERVISOR, ROLE_GM})


def validate_capability(code: str) -> bool:
    return code in CAPABILITIES
