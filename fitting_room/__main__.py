"""``python -m fitting_room`` / ``fitting-room``: start the Streamlit server on the app."""

import sys
from pathlib import Path

from streamlit.web import cli as stcli


def main():
    app_path = Path(__file__).with_name("app.py")
    sys.argv = ["streamlit", "run", str(app_path), *sys.argv[1:]]
    sys.exit(stcli.main())


if __name__ == "__main__":
    main()
