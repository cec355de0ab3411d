"""
Host-side tools for Rockchip devices in bootloader mode: block transfers over the USB bulk
protocol, parameter block and partition handling, and firmware container unpacking.
"""
from rkflash.error import *

__version__ = "0.1.0"
