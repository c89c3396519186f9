"""Development server for the BeautyBook API."""
from __future__ import annotations

import os

from beautybook import create_app
from beautybook.extensions import db


def main() -> None:
    flask_app = create_app()

    if os.environ.get("BEAUTYBOOK_CREATE_TABLES", "0") in {"1", "true", "True"}:
        with flask_app.app_context():
            db.create_all()

    for rule in sorted(flask_app.url_map.iter_rules(), key=lambda r: r.rule):
        flask_app.logger.debug("%s %s", ",".join(sorted(rule.methods - {"HEAD", "OPTIONS"})), rule.rule)

    debug_enabled = os.environ.get("FLASK_DEBUG", "0") in {"1", "true", "True"}
    flask_app.run(
        host=os.environ.get("HOST", "127.0.0.1"),
        port=int(os.environ.get("PORT", 5000)),
        debug=debug_enabled,
    )


if __name__ == "__main__":
    main()
