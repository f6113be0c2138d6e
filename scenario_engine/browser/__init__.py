from scenario_engine.browser.motion import SPEED_PX_PER_SECOND, MotionPlanner

__all__ = ['MotionPlanner', 'SPEED_PX_PER_SECOND']
