"""MesmerClock - timed feature orchestration core.

Drives timeline sessions, intensity ramps and the weekly auto-start
scheduler for overlay effects. Rendering and audio live elsewhere; this
package only switches features on and off and nudges numeric parameters.
"""

__app_name__ = "MesmerClock"
__version__ = "0.3.0"
