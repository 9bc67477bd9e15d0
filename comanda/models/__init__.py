from comanda.models.conversation import Conversation
from comanda.models.processed_message import ProcessedMessage
