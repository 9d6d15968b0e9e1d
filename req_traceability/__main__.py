"""Allow running as: python -m req_traceability"""

import sys

from req_traceability.main import main

if __name__ == "__main__":
    sys.exit(main())
