import sys

from passvault.vault_cli import main

sys.exit(main())
