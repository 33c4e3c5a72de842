import glob
import os

import psycopg2
from dotenv import load_dotenv

# 配置：DATABASE_URL 形如 postgresql://postgres:<password>@db.<project>.supabase.co:5432/postgres
load_dotenv()
MIGRATIONS_DIR = os.path.join(os.path.dirname(os.path.abspath(__file__)), "supabase", "migrations")


def run_migrations() -> bool:
    dsn = (os.environ.get("DATABASE_URL") or "").strip()
    if not dsn:
        print("❌ DATABASE_URL is required")
        return False

    files = sorted(glob.glob(os.path.join(MIGRATIONS_DIR, "*.sql")))
    if not files:
        print(f"⚠️ No migrations found in {MIGRATIONS_DIR}")
        return False

    print("🚀 Connecting to Supabase Database...")
    try:
        conn = psycopg2.connect(dsn)
        conn.autocommit = True
        cur = conn.cursor()

        for path in files:
            print(f"📄 Applying {os.path.basename(path)}...")
            with open(path, "r", encoding="utf-8") as f:
                cur.execute(f.read())

        print("✅ Database migration completed successfully!")
        cur.close()
        conn.close()
        return True
    except Exception as e:
        print(f"❌ Migration failed: {e}")
        return False


if __name__ == "__main__":
    raise SystemExit(0 if run_migrations() else 1)
