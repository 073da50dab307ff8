# Overview: Flask CLI command groups for bootstrap, inspection, and stock receipts.

# backend/retailops/cli.py
# Commands Legend (run from the backend directory):
# Prereqs:
# - Activate your virtualenv.
# - Set FLASK_APP to "retailops:create_app".
# - Use: python -m flask <group> <command> [options]
#
# System bootstrap/repair:
# - python -m flask system init-db [--store "Main Store"]
#   Create tables, a default store, roles and permissions (idempotent).
# - python -m flask system init-permissions
#   Initialize permissions and assign defaults to roles.
# - python -m flask system reset-db --yes
#   DEV/TEST only: drop and recreate all tables (deletes all data).
#
# Users and API access:
# - python -m flask users list
# - python -m flask users create --username alice --email alice@example.com --role staff
# - python -m flask users issue-token alice [--ttl-hours 8]
#   Print a bearer token for the /api/sales endpoints (shown once).
#
# Permissions:
# - python -m flask perms list [--role staff]
# - python -m flask perms grant staff sales:refund
# - python -m flask perms revoke staff sales:refund
#
# Inventory:
# - python -m flask inventory add-product --name "Widget" --price-cents 500 --cost-cents 300
# - python -m flask inventory receive 1 --quantity 10 [--cost-cents 320]
# - python -m flask inventory show [--low 5]

import click
from flask.cli import with_appcontext

from .errors import SaleError
from .extensions import db
from .models import Permission, Product, Role, RolePermission, Store, User
from .services import inventory_service, permission_service, session_service


# =============================================================================
# SYSTEM
# =============================================================================

@click.group('system')
def system_group():
    """System bootstrap and repair commands."""


@system_group.command('init-db')
@click.option('--store', 'store_name', default='Main Store', help='Name of the default store')
@with_appcontext
def init_db(store_name):
    """
    Create the schema and seed the data every deployment needs.

    Creates:
    - All tables (use Flask-Migrate for upgrades of an existing database)
    - Default store (if none exists)
    - Roles: admin, manager, staff
    - Permissions and default role assignments
    """
    click.echo("START Initializing RetailOps database...")
    db.create_all()

    store = db.session.query(Store).first()
    if not store:
        store = Store(name=store_name)
        db.session.add(store)
        db.session.commit()
        click.echo(f"PASS Created default store: {store.name} (ID: {store.id})")
    else:
        click.echo(f"PASS Using existing store: {store.name} (ID: {store.id})")

    permission_service.create_default_roles()
    created = permission_service.initialize_permissions()
    permission_service.assign_default_role_permissions()
    roles = db.session.query(Role).order_by(Role.level.desc()).all()
    click.echo(f"PASS Roles: {', '.join(r.name for r in roles)}")
    click.echo(f"PASS Created {created} permissions")
    click.echo("DONE Run 'python -m flask users create' to add an operator.")


@system_group.command('init-permissions')
@with_appcontext
def init_permissions():
    """Initialize permissions and assign defaults to roles."""
    permission_service.create_default_roles()
    created = permission_service.initialize_permissions()
    permission_service.assign_default_role_permissions()
    click.echo(f"PASS Created {created} permissions; default role assignments refreshed")


@system_group.command('reset-db')
@click.option('--yes', is_flag=True, help='Skip confirmation')
@with_appcontext
def reset_db(yes):
    """
    DANGER: Drop all tables and recreate schema.

    This will DELETE ALL DATA!
    """
    if not yes:
        click.confirm("WARN This will DELETE ALL DATA. Are you sure?", abort=True)

    click.echo("DELETE  Dropping all tables...")
    db.drop_all()

    click.echo("BUILD  Creating all tables...")
    db.create_all()

    click.echo("PASS Database reset complete. Run 'python -m flask system init-db' to seed.")


# =============================================================================
# USERS
# =============================================================================

@click.group('users')
def users_group():
    """User inspection and API token commands."""


@users_group.command('list')
@with_appcontext
def list_users():
    """List all users with roles and active status."""
    users = db.session.query(User).order_by(User.id).all()
    if not users:
        click.echo("No users found.")
        return

    click.echo("\n" + "="*70)
    click.echo(f"{'ID':<5} {'Username':<20} {'Roles':<25} {'Active'}")
    click.echo("="*70)
    for user in users:
        roles = ", ".join(ur.role.name for ur in user.user_roles) or "-"
        active_str = "Yes" if user.is_active else "No"
        click.echo(f"{user.id:<5} {user.username:<20} {roles:<25} {active_str}")
    click.echo("="*70 + "\n")


@users_group.command('create')
@click.option('--username', prompt=True, help='Username')
@click.option('--email', prompt=True, help='Email address')
@click.option('--role', type=click.Choice(['admin', 'manager', 'staff']), prompt=True, help='Role')
@click.option('--store-id', type=int, help='Home store (defaults to the first store)')
@with_appcontext
def create_user_cli(username, email, role, store_id):
    """Create a user and assign a role."""
    if db.session.query(User).filter_by(username=username).first():
        click.echo(f"FAIL User '{username}' already exists")
        return

    store = db.session.get(Store, store_id) if store_id else db.session.query(Store).first()
    if store_id and store is None:
        click.echo(f"FAIL Store ID {store_id} not found")
        return

    user = User(username=username, email=email, store_id=store.id if store else None)
    db.session.add(user)
    db.session.commit()

    try:
        permission_service.assign_role(user, role)
    except ValueError as e:
        click.echo(f"FAIL {e}. Run 'python -m flask system init-permissions' first.")
        return

    click.echo(f"PASS Created user: {username} ({email}) with role '{role}'")


@users_group.command('issue-token')
@click.argument('username')
@click.option('--ttl-hours', type=int, default=None, help='Token lifetime (default SESSION_TOKEN_TTL_HOURS)')
@with_appcontext
def issue_token_cli(username, ttl_hours):
    """Issue a bearer token for USERNAME. The token is printed once."""
    user = db.session.query(User).filter_by(username=username).first()
    if not user:
        click.echo(f"FAIL User '{username}' not found")
        return
    if not user.is_active:
        click.echo(f"FAIL User '{username}' is inactive")
        return

    token = session_service.issue_session(user, ttl_hours=ttl_hours)
    click.echo(token)


# =============================================================================
# PERMISSIONS
# =============================================================================

@click.group('perms')
def perms_group():
    """Permission inspection and repair commands."""


@perms_group.command('list')
@click.option('--role', 'role_name', default=None, help='Only permissions granted to this role')
@with_appcontext
def list_perms(role_name):
    """List permissions (optionally filtered by role)."""
    query = db.session.query(Permission).order_by(Permission.code)
    if role_name:
        query = (
            query.join(RolePermission, RolePermission.permission_id == Permission.id)
            .join(Role, Role.id == RolePermission.role_id)
            .filter(Role.name == role_name)
        )
    for perm in query.all():
        click.echo(f"{perm.code:<20} {perm.name}")


@perms_group.command('grant')
@click.argument('role_name')
@click.argument('code')
@with_appcontext
def grant_perm(role_name, code):
    """Grant permission CODE (e.g. sales:refund) to ROLE_NAME."""
    role = db.session.query(Role).filter_by(name=role_name).first()
    if not role:
        click.echo(f"FAIL Role '{role_name}' not found")
        return
    try:
        permission_service.grant_permission(role, code)
    except ValueError as e:
        click.echo(f"FAIL {e}")
        return
    click.echo(f"PASS Granted {code} to {role_name}")


@perms_group.command('revoke')
@click.argument('role_name')
@click.argument('code')
@with_appcontext
def revoke_perm(role_name, code):
    """Revoke permission CODE from ROLE_NAME."""
    role = db.session.query(Role).filter_by(name=role_name).first()
    if not role:
        click.echo(f"FAIL Role '{role_name}' not found")
        return
    if permission_service.revoke_permission(role, code):
        click.echo(f"PASS Revoked {code} from {role_name}")
    else:
        click.echo(f"WARN {role_name} did not have {code}")


# =============================================================================
# INVENTORY
# =============================================================================

@click.group('inventory')
def inventory_group():
    """Product and stock commands."""


@inventory_group.command('add-product')
@click.option('--name', required=True, help='Product name')
@click.option('--sku', default=None, help='Optional unique SKU')
@click.option('--price-cents', type=int, required=True, help='Selling price in cents')
@click.option('--cost-cents', type=int, default=0, help='Acquisition cost in cents')
@with_appcontext
def add_product_cli(name, sku, price_cents, cost_cents):
    """Create a product with zero stock. Use 'inventory receive' to stock it."""
    if price_cents < 0 or cost_cents < 0:
        click.echo("FAIL Prices must be non-negative")
        return

    product = Product(name=name, sku=sku, price_cents=price_cents, cost_price_cents=cost_cents, quantity=0)
    db.session.add(product)
    db.session.commit()
    click.echo(f"PASS Created product {product.id}: {product.name}")


@inventory_group.command('receive')
@click.argument('product_id', type=int)
@click.option('--quantity', type=int, required=True, help='Units received')
@click.option('--cost-cents', type=int, default=None, help='New acquisition cost in cents')
@with_appcontext
def receive_cli(product_id, quantity, cost_cents):
    """Record a stock receipt for PRODUCT_ID."""
    try:
        product = inventory_service.receive_stock(product_id, quantity, cost_price_cents=cost_cents)
    except SaleError as e:
        click.echo(f"FAIL {e}")
        return
    click.echo(f"PASS {product.name}: on hand {product.quantity}, cost {product.cost_price_cents}")


@inventory_group.command('show')
@click.option('--low', type=int, default=None, help='Only products at or below this quantity')
@with_appcontext
def show_inventory(low):
    """List products with their on-hand quantity."""
    query = db.session.query(Product).order_by(Product.id)
    if low is not None:
        query = query.filter(Product.quantity <= low)
    products = query.all()

    if not products:
        click.echo("No products found.")
        return

    click.echo("\n" + "="*80)
    click.echo(f"{'ID':<5} {'SKU':<15} {'Name':<30} {'Qty':>6} {'Price':>10} {'Cost':>10}")
    click.echo("="*80)
    for p in products:
        click.echo(
            f"{p.id:<5} {p.sku or '-':<15} {p.name[:30]:<30} {p.quantity:>6} "
            f"{p.price_cents:>10} {p.cost_price_cents:>10}"
        )
    click.echo("="*80 + "\n")


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(system_group)
    app.cli.add_command(users_group)
    app.cli.add_command(perms_group)
    app.cli.add_command(inventory_group)
