"""
Core building blocks for omicsengine: structured errors and container
reference resolution.

Copyright (c) Advanced Micro Devices, Inc. All rights reserved.
"""
