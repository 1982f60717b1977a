import logging
from typing import Any, Dict

from fastapi import FastAPI, Depends, File, HTTPException, UploadFile
from fastapi.responses import HTMLResponse
from markdown_it import MarkdownIt
from pydantic import BaseModel

import config
import gateway
import ingest
from auth import SessionContext, current_session, login, logout, require_admin
from kb import KnowledgeItem, KnowledgeStore, format_size
from session import Message

logging.basicConfig(level=config.LOG_LEVEL, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
log = logging.getLogger(__name__)

app = FastAPI(title="DIU Hall Info Bot", version="0.1")

store = KnowledgeStore(config.KB_PATH)
key_provider = gateway.RuntimeKeyProvider()

# raw HTML in replies is escaped
md = MarkdownIt("commonmark", {"html": False})


class LoginIn(BaseModel):
    username: str
    password: str

class ChatIn(BaseModel):
    message: str

class UrlIn(BaseModel):
    url: str

class ManualIn(BaseModel):
    title: str
    content: str

class KeyIn(BaseModel):
    api_key: str


def _item_out(it: KnowledgeItem) -> Dict[str, Any]:
    out = it.model_dump(mode="json", by_alias=True)
    out["size"] = format_size(it.content)
    return out

def _message_out(m: Message) -> Dict[str, Any]:
    out = m.model_dump(mode="json")
    if m.role == "assistant":
        out["html"] = md.render(m.content)
    return out

def _reply(transcript, knowledge) -> str:
    return gateway.generate(transcript, knowledge, provider=key_provider)


@app.get("/health")
def health():
    return {"ok": True, "model": config.MODEL, "kb_size": len(store)}

# --- auth ---
@app.post("/auth/login")
def auth_login(payload: LoginIn, ctx: SessionContext = Depends(current_session)):
    if not login(ctx, payload.username, payload.password):
        log.warning("[auth] failed admin login for session %s", ctx.id)
        raise HTTPException(status_code=401, detail="Invalid credentials")
    return ctx.auth.model_dump()

@app.post("/auth/logout")
def auth_logout(ctx: SessionContext = Depends(current_session)):
    logout(ctx)
    return ctx.auth.model_dump()

@app.get("/auth/me")
def auth_me(ctx: SessionContext = Depends(current_session)):
    return ctx.auth.model_dump()

# --- knowledge base ---
@app.get("/kb")
def kb_list():
    items = store.list()
    return {"ok": True, "entries": [_item_out(it) for it in items], "count": len(items)}

@app.post("/kb/file")
async def kb_file(file: UploadFile = File(...), ctx: SessionContext = Depends(require_admin)):
    data = await file.read()
    item, status = ingest.ingest_file(store, file.filename or "", data)
    return {"ok": True, "status": status, "entry": _item_out(item)}

@app.post("/kb/url")
async def kb_url(payload: UrlIn, ctx: SessionContext = Depends(require_admin)):
    try:
        item, status = await ingest.ingest_url(store, payload.url)
    except ingest.IngestError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)
    return {"ok": True, "status": status, "entry": _item_out(item)}

@app.post("/kb/manual")
def kb_manual(payload: ManualIn, ctx: SessionContext = Depends(require_admin)):
    try:
        item, status = ingest.ingest_manual(store, payload.title, payload.content)
    except ingest.IngestError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)
    return {"ok": True, "status": status, "entry": _item_out(item)}

@app.delete("/kb/{item_id}")
def kb_remove(item_id: str, ctx: SessionContext = Depends(require_admin)):
    store.remove(item_id)
    return {"ok": True, "count": len(store)}

# --- chat ---
@app.get("/chat")
def chat_transcript(ctx: SessionContext = Depends(current_session)):
    return {"messages": [_message_out(m) for m in ctx.chat.transcript()], "phase": ctx.chat.phase}

@app.post("/chat")
def chat(payload: ChatIn, ctx: SessionContext = Depends(current_session)):
    if not (payload.message or "").strip():
        raise HTTPException(status_code=400, detail="empty message")
    bot = ctx.chat.submit(payload.message, store.list(), reply_fn=_reply)
    if bot is None:
        raise HTTPException(status_code=409, detail="A reply is already in progress.")
    return {"message": _message_out(bot), "model": config.MODEL}

# --- API key (admin) ---
@app.get("/admin/key")
def key_status(ctx: SessionContext = Depends(require_admin)):
    has_key = key_provider.has_selected_api_key() or bool(config.env_api_key())
    return {"has_key": has_key, "selectable": config.ALLOW_KEY_SELECTION}

@app.post("/admin/key")
def key_select(payload: KeyIn, ctx: SessionContext = Depends(require_admin)):
    if not config.ALLOW_KEY_SELECTION:
        raise HTTPException(status_code=400, detail="API Key management is not available in this environment.")
    key_provider.select_key(payload.api_key)
    return {"ok": True, "has_key": key_provider.has_selected_api_key(),
            "status": {"type": "success", "message": "API Key session initialized."}}

@app.post("/admin/key/verify")
def key_verify(ctx: SessionContext = Depends(require_admin)):
    res = gateway.validate_api_key(key_provider)
    if res["ok"]:
        status = {"type": "success", "message": "API Key verified successfully."}
    else:
        status = {"type": "error", "message": res.get("message") or "Key verification failed."}
    return {"ok": res["ok"], "status": status}


# --- Single-page UI (student chat + admin knowledge management) ---
HTML_INDEX = r"""
<!doctype html>
<html>
<head>
  <meta charset="utf-8"/>
  <title>DIU Hall Bot</title>
  <meta name="viewport" content="width=device-width, initial-scale=1"/>
  <style>
    :root { --bg:#0b0f17; --card:#111827; --muted:#9ca3af; --fg:#e5e7eb; --acc:#60a5fa; --ok:#34d399; --err:#f87171; }
    *{box-sizing:border-box}
    body{margin:0;background:var(--bg);color:var(--fg);font:16px/1.45 system-ui,-apple-system,Segoe UI,Roboto}
    header{padding:18px 20px;border-bottom:1px solid #1f2937;display:flex;gap:16px;align-items:center}
    .badge{background:#0ea5e9;color:white;padding:2px 8px;border-radius:999px;font-size:12px}
    .wrap{max-width:980px;margin:0 auto;padding:18px}
    .panel{background:var(--card);border:1px solid #1f2937;border-radius:16px;overflow:hidden;margin-bottom:14px}
    .top{padding:14px;display:flex;gap:10px;align-items:center;border-bottom:1px solid #1f2937;flex-wrap:wrap}
    .section{padding:14px 14px 4px 14px;font-weight:600;color:#cbd5e1}
    input,textarea{background:#0b1220;border:1px solid #1f2937;border-radius:10px;color:var(--fg);padding:8px 10px}
    input[type=text]{flex:1;outline:none}
    textarea{width:100%;min-height:90px}
    button{background:var(--acc);color:#071521;border:0;border-radius:10px;padding:8px 12px;font-weight:600;cursor:pointer}
    button.ghost{background:#0b1220;color:var(--fg);border:1px solid #1f2937}
    button:disabled{opacity:.5;cursor:default}
    #log{height:56vh;overflow:auto;padding:14px;display:flex;flex-direction:column;gap:10px}
    .msg{padding:10px 12px;border-radius:12px;max-width:78%;background:#0b1220;border:1px solid #1f2937}
    .me{align-self:flex-end;white-space:pre-wrap}
    .bot{align-self:flex-start}
    .small{font-size:12px;color:var(--muted)}
    table{border-collapse:collapse;width:100%}
    th,td{border-top:1px solid #1f2937;padding:8px 10px;text-align:left;font-size:14px}
    #status{position:fixed;top:16px;right:16px;padding:10px 14px;border-radius:10px;display:none;color:#071521;font-weight:600}
    #status.success{display:block;background:var(--ok)}
    #status.error{display:block;background:var(--err)}
    #loginModal{position:fixed;inset:0;background:rgba(0,0,0,.6);display:none;align-items:center;justify-content:center}
    #loginModal .panel{padding:18px;width:320px;display:flex;flex-direction:column;gap:10px}
    .right{margin-left:auto}
    .hidden{display:none}
  </style>
</head>
<body>
<header>
  <div style="font-weight:800;font-size:18px">DIU HALL BOT</div>
  <span class="badge" id="modelBadge"></span>
  <div class="right">
    <button id="loginBtn" onclick="openLogin()">Admin Login</button>
    <button id="logoutBtn" class="ghost hidden" onclick="doLogout()">Exit Admin Mode</button>
  </div>
</header>
<div id="status"></div>

<div class="wrap">
  <!-- ADMIN -->
  <div id="adminView" class="hidden">
    <div class="panel">
      <div class="section">AI Engine</div>
      <div class="top">
        <span class="small" id="keyState">Checking key…</span>
        <input id="apiKey" type="password" placeholder="API key for this server session" style="flex:1">
        <button class="ghost" onclick="selectKey()">Select key</button>
        <button id="verifyBtn" onclick="verifyKey()">Verify</button>
      </div>
    </div>
    <div class="panel">
      <div class="section">Add knowledge</div>
      <div class="top">
        <input id="fileInput" type="file" accept="__ACCEPT__" onchange="uploadFile(this)">
      </div>
      <div class="top">
        <input id="url" type="text" placeholder="https://example.edu/hall-rules">
        <button id="urlBtn" onclick="addUrl()">Scrape URL</button>
      </div>
      <div class="top" style="flex-direction:column;align-items:stretch">
        <input id="manualTitle" type="text" placeholder="Title">
        <textarea id="manualText" placeholder="Content"></textarea>
        <button onclick="addManual()">Save record</button>
      </div>
    </div>
    <div class="panel">
      <div class="section">Knowledge base</div>
      <table><thead><tr><th>Name</th><th>Type</th><th>Source</th><th>Size</th><th></th></tr></thead>
        <tbody id="kbRows"></tbody></table>
    </div>
  </div>

  <!-- CHAT -->
  <div id="chatView" class="panel">
    <div class="section">Student Inquiry Terminal</div>
    <div id="log"></div>
    <div class="top">
      <input id="msg" type="text" placeholder="Ask about hall facilities, fees, rules…" onkeydown="if(event.key==='Enter'){send()}">
      <button id="sendBtn" onclick="send()">Send</button>
    </div>
  </div>
</div>

<div id="loginModal">
  <div class="panel">
    <div style="font-weight:700">Admin Login</div>
    <input id="username" type="text" placeholder="Username">
    <input id="password" type="password" placeholder="Password" onkeydown="if(event.key==='Enter'){doLogin()}">
    <div class="flex"><button onclick="doLogin()">Sign in</button> <button class="ghost" onclick="closeLogin()">Cancel</button></div>
  </div>
</div>

<script>
const MODEL_FROM_SERVER = "__MODEL__";
const STATUS_MS = __STATUS_MS__;
document.getElementById("modelBadge").textContent = MODEL_FROM_SERVER;

let SID = sessionStorage.getItem("hallSid");
if(!SID){ SID = Math.random().toString(36).slice(2, 11); sessionStorage.setItem("hallSid", SID); }
let typing = false;
let statusTimer = null;

function showStatus(type, message){
  const el=document.getElementById("status");
  el.className=type; el.textContent=message;
  clearTimeout(statusTimer);
  statusTimer=setTimeout(()=>{ el.className=""; el.textContent=""; }, STATUS_MS);
}
async function call(method, path, body, isForm){
  const headers={"X-Session-Id": SID};
  if(body && !isForm) headers["Content-Type"]="application/json";
  const res = await fetch(path, {method, headers, body: isForm ? body : (body ? JSON.stringify(body) : undefined)});
  const txt = await res.text();
  let json = null; try { json = JSON.parse(txt); } catch(e){}
  if(!res.ok) throw new Error((json && json.detail) || txt);
  return json;
}
function add(m){
  const d=document.createElement("div");
  if(m.role==="assistant"){ d.className="msg bot"; d.innerHTML=m.html; }
  else { d.className="msg me"; d.textContent=m.content; }
  const log=document.getElementById("log"); log.appendChild(d);
  log.scrollTop=log.scrollHeight;
}
async function loadChat(){
  const out = await call("GET", "/chat");
  document.getElementById("log").innerHTML="";
  out.messages.forEach(add);
}
async function send(){
  const box=document.getElementById("msg");
  const m=box.value;
  if(!m.trim() || typing) return;
  add({role:"user", content:m});
  box.value="";
  typing=true; document.getElementById("sendBtn").disabled=true;
  try{
    const out = await call("POST", "/chat", {message:m});
    add(out.message);
  }catch(e){ showStatus("error", e.message); }
  finally{ typing=false; document.getElementById("sendBtn").disabled=false; }
}
function setRole(role){
  const admin = role==="admin";
  document.getElementById("adminView").classList.toggle("hidden", !admin);
  document.getElementById("chatView").classList.toggle("hidden", admin);
  document.getElementById("loginBtn").classList.toggle("hidden", admin);
  document.getElementById("logoutBtn").classList.toggle("hidden", !admin);
  if(admin){ loadKB(); loadKey(); }
}
function openLogin(){ document.getElementById("loginModal").style.display="flex"; }
function closeLogin(){ document.getElementById("loginModal").style.display="none"; }
async function doLogin(){
  try{
    const out = await call("POST", "/auth/login", {
      username: document.getElementById("username").value,
      password: document.getElementById("password").value
    });
    document.getElementById("username").value=""; document.getElementById("password").value="";
    closeLogin(); setRole(out.role);
  }catch(e){ showStatus("error", e.message); }
}
async function doLogout(){
  const out = await call("POST", "/auth/logout"); setRole(out.role);
}
async function loadKB(){
  const out = await call("GET", "/kb");
  const tb=document.getElementById("kbRows"); tb.innerHTML="";
  out.entries.forEach(it=>{
    const tr=document.createElement("tr");
    [it.name, it.type, it.source, it.size].forEach(v=>{ const td=document.createElement("td"); td.textContent=v; tr.appendChild(td); });
    const td=document.createElement("td"); const b=document.createElement("button");
    b.className="ghost"; b.textContent="Remove"; b.onclick=()=>removeItem(it.id);
    td.appendChild(b); tr.appendChild(td); tb.appendChild(tr);
  });
}
async function removeItem(id){
  try{ await call("DELETE", "/kb/"+encodeURIComponent(id)); loadKB(); }
  catch(e){ showStatus("error", e.message); }
}
async function uploadFile(input){
  const f=input.files && input.files[0]; if(!f) return;
  const fd=new FormData(); fd.append("file", f);
  try{ const out = await call("POST", "/kb/file", fd, true); showStatus(out.status.type, out.status.message); loadKB(); }
  catch(e){ showStatus("error", e.message); }
  finally{ input.value=""; }
}
async function addUrl(){
  const u=document.getElementById("url").value.trim(); if(!u) return;
  const btn=document.getElementById("urlBtn"); btn.disabled=true;
  try{
    const out = await call("POST", "/kb/url", {url:u});
    document.getElementById("url").value="";
    showStatus(out.status.type, out.status.message); loadKB();
  }catch(e){ showStatus("error", e.message); }
  finally{ btn.disabled=false; }
}
async function addManual(){
  try{
    const out = await call("POST", "/kb/manual", {
      title: document.getElementById("manualTitle").value,
      content: document.getElementById("manualText").value
    });
    document.getElementById("manualTitle").value=""; document.getElementById("manualText").value="";
    showStatus(out.status.type, out.status.message); loadKB();
  }catch(e){ showStatus("error", e.message); }
}
async function loadKey(){
  const out = await call("GET", "/admin/key");
  document.getElementById("keyState").textContent = out.has_key ? "Key configured" : "No key";
}
async function selectKey(){
  try{
    const out = await call("POST", "/admin/key", {api_key: document.getElementById("apiKey").value});
    document.getElementById("apiKey").value="";
    showStatus(out.status.type, out.status.message); loadKey();
  }catch(e){ showStatus("error", e.message); }
}
async function verifyKey(){
  const btn=document.getElementById("verifyBtn"); btn.disabled=true;
  try{
    const out = await call("POST", "/admin/key/verify");
    document.getElementById("keyState").textContent = out.ok ? "Online" : "Offline";
    showStatus(out.status.type, out.status.message);
  }catch(e){ showStatus("error", "Key verification failed."); }
  finally{ btn.disabled=false; }
}
call("GET", "/auth/me").then(a=>setRole(a.role));
loadChat();
</script>
</body>
</html>
"""

@app.get("/", response_class=HTMLResponse)
def root():
    html = (HTML_INDEX
            .replace("__MODEL__", config.MODEL)
            .replace("__STATUS_MS__", str(config.STATUS_DISMISS_MS))
            .replace("__ACCEPT__", ingest.ACCEPT_TYPES))
    return HTMLResponse(content=html)
