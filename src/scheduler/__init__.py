"""Scheduler for the scheduled-ride lifecycle.

Schedule overview (configured zone, America/Chicago by default):
  - 22:00 daily     - Remind drivers of tomorrow's bookings
  - every minute    - Promote due bookings into live rides
  - every 5 minutes - Alert drivers of rides starting soon
"""
