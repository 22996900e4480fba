"""
Utility modules for omicsengine.

Copyright (c) Advanced Micro Devices, Inc. All rights reserved.
"""
