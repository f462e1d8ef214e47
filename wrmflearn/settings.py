import os
import logging
from dotenv import dotenv_values, find_dotenv

from wrmflearn.exceptions import ConfigurationError

class Settings:
    """
    Process-level defaults, read from the environment or a .env file in
    the working directory each time they are asked for. The .env values
    are not copied into os.environ.
    """

    def get(self,name,default):
        if name in os.environ:
            return os.environ[name]
        return dotenv_values(find_dotenv(usecwd=True)).get(name) or default

    # size of the worker pool used inside one ALS pass
    @property
    def N_THREADS(self):
        value = self.get("WRMF_N_THREADS","1")
        try:
            n_threads = int(value)
        except ValueError:
            raise ConfigurationError("WRMF_N_THREADS should be an integer, got %r" % value) from None
        if n_threads<1:
            raise ConfigurationError("WRMF_N_THREADS should be positive, got %r" % value)
        return n_threads

    # level of the "wrmflearn" logger, left alone when empty
    @property
    def LOG_LEVEL(self):
        return self.get("WRMF_LOG_LEVEL","").upper()

    def apply_log_level(self):
        level = self.LOG_LEVEL
        if not level:
            return
        if not isinstance(logging.getLevelName(level),int):
            raise ConfigurationError("WRMF_LOG_LEVEL %r is not a logging level" % level)
        logging.getLogger("wrmflearn").setLevel(level)

settings = Settings()
