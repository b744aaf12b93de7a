"""Pipeline modules.

This package provides a small, filesystem-first runner that executes the CI/CD
stage sequence (checkout, scans, build, quality gate, publish, deploy) by
shelling out to the external tools, one stage at a time.
"""
