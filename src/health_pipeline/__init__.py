"""
Continuous delivery pipeline for the Health application.

Clones the tracked repositories, builds and packages the workspace, and
deploys and integration-tests it on the tagged dev fleet through AWS
Systems Manager Run Command.
"""

__version__ = "0.1.0"
