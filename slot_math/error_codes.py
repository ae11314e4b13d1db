class ErrorCodes:
    CONFIGURATION_ERROR = "SM_CONFIG_001"
    INVALID_PARAMETER = "SM_PARAM_001"
    SIMULATION_DIVERGENCE = "SM_SIM_001"
    GAME_LOGIC_ERROR = "SM_GAME_001"
