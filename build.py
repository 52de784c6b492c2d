#!/usr/bin/env python3
"""
Build standalone host-local IPAM plugin executable
Usage: python3 build.py [--version VERSION]

The resulting binary can be dropped into a CNI plugin directory
(e.g. /opt/cni/bin) and driven with CNI_CONTAINERID / CNI_IFNAME.
"""

import PyInstaller.__main__
import os
import sys

SCRIPT = "hostlocal.py"
NAME = "hostlocal"

# Get version from argument
VERSION = None
if len(sys.argv) > 1 and sys.argv[1] == "--version":
    if len(sys.argv) > 2:
        VERSION = sys.argv[2]
    else:
        print("❌ Error: --version requires a version string")
        sys.exit(1)
elif len(sys.argv) > 1:
    print(f"❌ Unknown argument: {sys.argv[1]}")
    print("Usage: python3 build.py [--version VERSION]")
    sys.exit(1)

if not os.path.exists(SCRIPT):
    print(f"❌ Error: {SCRIPT} not found!")
    sys.exit(1)

OUTPUT_NAME = NAME if VERSION is None else f"{NAME}-v{VERSION}"

print(f"🔨 Building standalone executable for {SCRIPT}...")
print(f"📦 Version: {VERSION if VERSION else 'latest'}")
print(f"📁 Output: dist/{OUTPUT_NAME}")

PyInstaller.__main__.run(
    [
        SCRIPT,
        "--onefile",  # Single EXE file
        "--name=" + OUTPUT_NAME,
        "--hidden-import=sqlalchemy.dialects.sqlite",
        "--hidden-import=sqlalchemy.dialects.postgresql",
        "--hidden-import=rich.logging",
        "--hidden-import=yaml",
        "--collect-all=sqlalchemy",
        "--collect-all=rich",
        "--clean",  # Clean cache
        "--noconfirm",  # Overwrite output dir
    ]
)

print(f"✅ Build complete! Executable: dist/{OUTPUT_NAME}")
