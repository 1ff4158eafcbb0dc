"""dslsync - edit remote workflow DSL documents locally.

Philosophy:
- Ruthless simplicity
- Brick architecture (self-contained modules)
- Security by design (tokens never logged in clear)
- Fail fast with helpful guidance

dslsync exports a workflow application's DSL document from the console,
splits its prompts into plain files for editing, and merges and publishes
them back.
"""

__version__ = "0.1.0"
__all__ = ["__version__"]
