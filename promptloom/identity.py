__codename__ = "PROMPTLOOM"
__tagline__ = "Compose, run and share LLM prompts"
__version__ = "0.4.0"

BANNER = r"""
  ___                     _   _
 | _ \_ _ ___ _ __  _ __ | |_| |   ___  ___ _ __
 |  _/ '_/ _ \ '  \| '_ \|  _| |__/ _ \/ _ \ '  \
 |_| |_| \___/_|_|_| .__/ \__|____\___/\___/_|_|_|
                   |_|
"""
