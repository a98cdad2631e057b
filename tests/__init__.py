"""Test package for the Abacus Trainer.

Core tests drive the practice engines with a fake clock and scripted random
sources, so no test sleeps.  UI smoke tests run pygame with the SDL dummy
drivers to avoid opening real windows.  Run ``pytest`` from the project root.
"""
