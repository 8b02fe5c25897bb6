# =============================================================================
# popkeep Entry Point for `python -m popkeep`
# =============================================================================
# Equivalent to running the 'popkeep' command after installation.
# =============================================================================

import sys

from popkeep.app import main

if __name__ == "__main__":
    sys.exit(main())
