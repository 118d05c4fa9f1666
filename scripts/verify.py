"""
Incident Report Verification Script

Summarizes the Excel incident report written by the Celery worker.
Run from project root: python scripts/verify.py

Author: Khalil Bannouri
Version: 1.0.0
"""

import os
import sys
from datetime import datetime

# Add parent directory to path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

import pandas as pd

from app.core.config import get_settings
from app.services.excel_manager import ExcelManager

EXCEL_FILE = get_settings().incident_report_path


def verify_incidents() -> bool:
    """Verify the incident report and list open incidents."""

    print("=" * 60)
    print("🔍 INCIDENT REPORT")
    print("=" * 60)
    print(f"⏰ Timestamp: {datetime.now().strftime('%Y-%m-%d %H:%M:%S')}")
    print(f"📄 File: {EXCEL_FILE}")
    print("=" * 60)

    if not os.path.exists(EXCEL_FILE):
        print("\n✅ No incident report: no compensation has failed.")
        return True

    try:
        df = pd.read_excel(EXCEL_FILE, engine='openpyxl')
        print("\n✅ File loaded successfully!")
    except Exception as e:
        print(f"\n❌ Could not read Excel file: {e}")
        return False

    print("\n📊 STATISTICS:")
    print(f"   Total Incidents: {len(df)}")

    missing = [col for col in ExcelManager.INCIDENT_COLUMNS if col not in df.columns]
    if missing:
        print(f"\n⚠️ Missing Columns: {missing}")
    else:
        print("\n✅ All required columns present")

    if 'incident_id' in df.columns:
        duplicates = df['incident_id'].duplicated().sum()
        if duplicates > 0:
            print(f"\n⚠️ {duplicates} duplicate incident IDs found!")
        else:
            print("✅ No duplicate incident IDs")

    if 'kind' in df.columns and len(df) > 0:
        print("\n🧾 BY KIND:")
        for kind, count in df['kind'].value_counts().items():
            print(f"   {kind}: {count}")

    if 'table_id' in df.columns and len(df) > 0:
        tables = df['table_id'].dropna().unique()
        print(f"\n🪑 Tables needing attention: {len(tables)}")

    print("\n📋 RECENT INCIDENTS:")
    print("-" * 60)
    if len(df) > 0:
        cols = ['incident_id', 'kind', 'table_id', 'compensation_error']
        cols = [c for c in cols if c in df.columns]
        print(df[cols].tail(5).to_string(index=False))

    print("\n" + "=" * 60)
    print("✅ VERIFICATION COMPLETE")
    print("=" * 60)

    return True


if __name__ == "__main__":
    sys.exit(0 if verify_incidents() else 1)
