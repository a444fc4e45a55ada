import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parents[1]
SRC = ROOT / "src"
if str(SRC) not in sys.path:
    sys.path.insert(0, str(SRC))


def make_ctx(role: str = "owner", store_id: int = 1, user_id: int = 1):
    from sirm.domain.models import SessionContext, User

    return SessionContext(store_id=store_id, user=User(id=user_id, username=f"{role}{user_id}", role=role))


def make_repo(tmp_path: Path, name: str = "store.db"):
    from sirm.repositories.sqlite_repo import SqliteRepository

    repo = SqliteRepository(tmp_path / name)
    repo.init_db()
    return repo


def checkout(repo, store_id: int, receipt_code: str, lines, customer_name: str = "Walk-in") -> str:
    """Write a sale group and its receipt the way the checkout flow does.

    Each line is (product_id, quantity, amount, device_id_field) with an optional
    fifth item for the unit price.
    """
    group = f"G-{receipt_code}"
    for line in lines:
        product_id, qty, amount, field = line[:4]
        unit_price = line[4] if len(line) > 4 else None
        repo.record_sale(store_id, product_id, qty, amount, group, device_id_field=field, unit_price=unit_price)
    repo.create_receipt(store_id, group, receipt_code, customer_name=customer_name)
    return group
