class Stateful:
    """
    Object whose runtime state can be captured and restored.

    `config_keys` lists the constructor arguments `get_config` reports, so
    `cls.from_config(obj.get_config())` rebuilds an equivalent object.
    """
    config_keys = ()

    def state_dict(self):
        return {}

    def load_state_dict(self, state):
        pass

    def get_config(self):
        return {key: getattr(self, key) for key in self.config_keys}

    @classmethod
    def from_config(cls, cfg):
        return cls(**cfg)
