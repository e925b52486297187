"""Customer support chatbot backend: auth, chats, documents and FAQs."""
