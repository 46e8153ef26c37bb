#!/usr/bin/env python3
import sys

from src.api.seed_service import seed_demo_data

if __name__ == "__main__":
    db_path = sys.argv[1] if len(sys.argv) > 1 else None
    summary = seed_demo_data(db_path)

    print(f"\n  ✓ org {summary['org_id']}")
    print(f"  ✓ {len(summary['project_ids'])} projects ({summary['runs']} runs)")
    print(f"  ✓ dataset {summary['dataset_id']} ({summary['prompts']} prompts, {summary['variations']} variations)")
    print(f"  ✓ checklist {summary['checklist_id']}")
    print(f"\n  ✅ Ready!\n")
