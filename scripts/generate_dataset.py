"""
Messy Raw Extract Generator
Writes customers, product categories, products and orders CSVs with the
defects the staging layer is built to repair.
"""

import sys
from pathlib import Path

from sales_bi.data.generators import RawDataGenerator
from sales_bi.ingestion.raw_loader import write_raw_relations

OUTPUT_DIR = Path(__file__).parent.parent / "data" / "raw"

N_CUSTOMERS = 2000
N_ORDERS = 20000


# ==========================================
# MAIN
# ==========================================
def main(output_dir: Path = OUTPUT_DIR, seed: int = 42):
    print("=" * 60)
    print("🛒 Raw Sales Extract Generator")
    print("=" * 60 + "\n")

    print(f"📊 Generating {N_CUSTOMERS:,} customers and {N_ORDERS:,} orders...")
    raw = RawDataGenerator(seed=seed).generate(n_customers=N_CUSTOMERS, n_orders=N_ORDERS)
    written = write_raw_relations(raw, output_dir)

    print("\n" + "=" * 60)
    print("✅ Raw Extract Generation Complete!")
    print("=" * 60)
    print(f"\n📁 Output: {output_dir}\n")

    total = 0
    for relation, file_path in written.items():
        rows = raw[relation].height
        size = Path(file_path).stat().st_size / 1024 / 1024
        total += rows
        print(f"   📄 {Path(file_path).name}: {rows:,} rows ({size:.2f} MB)")

    print(f"\n📊 Total: {total:,} rows")


if __name__ == "__main__":
    main(Path(sys.argv[1]) if len(sys.argv) > 1 else OUTPUT_DIR)
