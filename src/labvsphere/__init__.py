"""labvsphere - vSphere VM lifecycle orchestration for lab machines

Philosophy:
- Bounded retries around every unreliable remote call
- Explicit compensating actions (a failed creation is torn down)
- One leased management connection per operation
- Fail fast on missing input, with every missing field reported at once

labvsphere creates disposable test machines from vSphere templates, drives
their power state, takes and reverts snapshots, moves files in and out of
the guest and places machines into DRS VM groups.
"""

__version__ = "0.1.0"
__all__ = ["__version__"]
