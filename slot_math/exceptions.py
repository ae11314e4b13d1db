from slot_math.error_codes import ErrorCodes

class AppException(Exception):
    def __init__(self, error_code, status_message, details=None):
        super().__init__(status_message)
        self.error_code = error_code
        self.status_message = status_message
        self.details = details if details is not None else {}

class ConfigurationException(AppException):
    def __init__(self, status_message="Invalid game configuration", details=None):
        super().__init__(
            error_code=ErrorCodes.CONFIGURATION_ERROR,
            status_message=status_message,
            details=details
        )

class InvalidParameterException(AppException):
    def __init__(self, status_message="Wrong parameter", details=None):
        super().__init__(
            error_code=ErrorCodes.INVALID_PARAMETER,
            status_message=status_message,
            details=details
        )

class SimulationDivergenceException(AppException):
    def __init__(self, status_message="Simulated RTP diverges from exact RTP", details=None):
        super().__init__(
            error_code=ErrorCodes.SIMULATION_DIVERGENCE,
            status_message=status_message,
            details=details
        )

class GameLogicException(AppException):
    def __init__(self, status_message="Game logic error", details=None):
        super().__init__(
            error_code=ErrorCodes.GAME_LOGIC_ERROR,
            status_message=status_message,
            details=details
        )
