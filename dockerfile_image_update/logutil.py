import logging


class EntityLoggingAdapter(logging.LoggerAdapter):
    """ Prefixes every message with the name of the entity being worked on, usually a repository """
    def process(self, msg, kwargs):
        return '[%s] %s' % (self.extra['entity'], msg), kwargs

