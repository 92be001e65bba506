"""
Write the OpenAPI document to interfaces/openapi.json.

    python -m order_tracker.api.generate_openapi [output-path]

The kiosk WebSocket is listed under the x-websocket-endpoints extension.
"""

import json
import sys
from pathlib import Path
from typing import Any, Dict, List, Optional

from order_tracker.api.main import WEBSOCKET_ENDPOINTS, app

DEFAULT_OUTPUT = Path("interfaces") / "openapi.json"


# PUBLIC_INTERFACE
def build_openapi_document() -> Dict[str, Any]:
    """OpenAPI schema of the app plus the WebSocket extension."""
    document = dict(app.openapi())
    document["x-websocket-endpoints"] = WEBSOCKET_ENDPOINTS
    return document


# PUBLIC_INTERFACE
def main(argv: Optional[List[str]] = None) -> Path:
    args = sys.argv[1:] if argv is None else argv
    output = Path(args[0]) if args else DEFAULT_OUTPUT
    output.parent.mkdir(parents=True, exist_ok=True)
    output.write_text(json.dumps(build_openapi_document(), indent=2), encoding="utf-8")
    return output


if __name__ == "__main__":
    print(main())
