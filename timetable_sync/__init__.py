"""
Timetable grid parsing and calendar synchronisation.
"""
