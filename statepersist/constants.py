KEY_PREFIX = "statepersist:"
REHYDRATE = "persist/REHYDRATE"
