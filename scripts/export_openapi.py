#!/usr/bin/env python
"""
Write the API's OpenAPI schema to docs/openapi.json
"""
import json
import sys
from pathlib import Path

project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root / "src"))

from cms_regen.app import create_app


def export_schema(output_path: Path) -> dict:
    schema = create_app().openapi()
    output_path.parent.mkdir(parents=True, exist_ok=True)
    with open(output_path, "w", encoding="utf-8") as f:
        json.dump(schema, f, indent=2, ensure_ascii=False)
    return schema


if __name__ == "__main__":
    target = Path(sys.argv[1]) if len(sys.argv) > 1 else project_root / "docs" / "openapi.json"
    schema = export_schema(target)
    print(f"OpenAPI schema written to {target}: {len(schema.get('paths', {}))} paths, version {schema['info']['version']}")
