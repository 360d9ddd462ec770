"""
SIAKAD: academic administration core

Student, lecturer, course and room records with two admission engines: KRS
(course registration) admission control with a per-term credit ceiling, and
room booking conflict detection.
"""

__version__ = "1.0.0"
__author__ = "SIAKAD Development Team"
__description__ = "Academic administration core with KRS admission control and room scheduling"
