from flask import Blueprint

# Authentication routes
auth_bp = Blueprint('auth', __name__)

# Client management routes
client_bp = Blueprint('client', __name__)

# Package catalog and client package routes
packages_bp = Blueprint('packages', __name__)

# Session booking and lifecycle routes
sessions_bp = Blueprint('sessions', __name__)

# Ledger routes
payments_bp = Blueprint('payments', __name__)

# Invoice routes
invoices_bp = Blueprint('invoices', __name__)

# Expense routes
expenses_bp = Blueprint('expenses', __name__)

# Staff management routes
staff_bp = Blueprint('staff', __name__)

# Client portal routes
portal_bp = Blueprint('portal', __name__)

# Reporting routes
reporting_bp = Blueprint('reporting', __name__)

# Dashboard routes
dashboard_bp = Blueprint('dashboard', __name__)

# Import route handlers to register routes
from . import (
    auth,
    clients,
    packages,
    sessions,
    payments,
    invoices,
    expenses,
    staff,
    portal,
    reporting
)
