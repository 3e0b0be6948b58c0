"""Traffic exchange core: view validation pipeline and points/earnings ledger.

Having this file ensures the package is recognized as a standard Python
package during test discovery and editable installs.
"""

__version__ = "1.0.0"

__all__: list[str] = ["__version__"]
