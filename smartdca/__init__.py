"""SmartDCA - Rule-based dollar cost averaging with backtesting and parameter sweeps."""

import warnings

__version__ = "0.1.0"


# ccxt leaves aiohttp sessions to the garbage collector on shutdown
warnings.filterwarnings("ignore", message="Unclosed client session")
warnings.filterwarnings("ignore", message="Unclosed connector")
