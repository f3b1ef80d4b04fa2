"""Reusable payloads for the auth scenarios."""

CASHIER_LOGIN = {
    "username": "cashier1",
    "email": "cashier1@example.com",
    "password": "till-pass-1",
    "full_name": "Cashier One",
}

MULTI_COMPANY_ACCOUNTANT = {
    "username": "acc1",
    "email": "acc1@example.com",
    "password": "ledger-pass",
    "full_name": "Accountant One",
}

REGISTER_WITH_COMPANY = {
    "username": "founder",
    "email": "owner@newco.example",
    "password": "owner-pass",
    "fullName": "Owner Person",
    "companyName": "NewCo",
}

SIGNUP_COMPANY = {
    "email": "signup@pendingco.example",
    "password": "signup-pass",
    "fullName": "Signup Person",
    "companyName": "PendingCo",
}

SUSPENDED_SELECTION = {
    "subscription_status": "suspended",
    "expected_status_code": 403,
    "expected_error": "Company subscription suspended",
}

PENDING_SELECTION = {
    "subscription_status": "pending",
    "expected_status_code": 403,
    "expected_error": "Company pending approval",
}
